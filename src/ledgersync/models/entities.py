"""Local business records that are pushed to the accounting provider.

Each table carries a nullable remote linkage column; a null value means
the row has never been created remotely.
"""
from datetime import date, datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from ledgersync.time_utils import utcnow


class Vendor(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    name: str
    email: Optional[str] = None
    qbo_vendor_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Client(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    name: str
    email: Optional[str] = None
    qbo_customer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Project(SQLModel, table=True):
    """A project is pushed as a sub-customer, so it shares the customer linkage."""

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    owner_id: str
    name: str
    client: str = ""  # display name of the client
    contact_email: Optional[str] = None
    client_id: Optional[int] = Field(default=None, foreign_key="client.id")
    qbo_customer_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Bill(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    vendor_id: Optional[int] = Field(default=None, foreign_key="vendor.id")
    project_id: Optional[int] = Field(default=None, foreign_key="project.id")
    amount: float = 0.0
    due_date: Optional[date] = None
    qbo_bill_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Invoice(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    invoice_number: str
    client_name: str = ""
    client_email: str = ""
    project_id: Optional[int] = Field(default=None, foreign_key="project.id")
    amount: float = 0.0
    due_date: Optional[date] = None
    status: str = "draft"
    source_milestone_id: Optional[int] = Field(default=None, foreign_key="milestone.id", index=True)
    qbo_invoice_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    invoice_id: Optional[int] = Field(default=None, foreign_key="invoice.id")
    amount: float = 0.0
    qbo_payment_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
