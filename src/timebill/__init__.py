"""timebill: PDF invoices from Toggl Track time entries and client contracts."""

__version__ = "0.1.0"
