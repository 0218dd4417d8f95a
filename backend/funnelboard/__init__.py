"""funnelboard: campaign dashboard ingestion plus a lightweight sales CRM."""
