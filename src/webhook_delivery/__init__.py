"""Webhook delivery service."""
