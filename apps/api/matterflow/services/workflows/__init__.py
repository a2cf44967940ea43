"""Webhook-triggered orchestrators."""
