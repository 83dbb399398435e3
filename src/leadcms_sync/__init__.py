"""Pull-side sync, reconciliation and three-way merge for LeadCMS mirrors."""

__version__ = "0.1.0"
