from portfolio_events.db.models import Base, Contact, ContactTransition
from portfolio_events.db.repository import ContactPage, ContactRepository

__all__ = ["Base", "Contact", "ContactTransition", "ContactPage", "ContactRepository"]
