"""Typed models: raw n8n payloads, derived trigger data and result envelopes."""
