"""HTTP routers: sheet ingestion, dashboard CRM and the public lead API."""
