"""Domain services. Import the concrete modules directly
(`from funnelboard.services.lead_service import LeadService`)."""
