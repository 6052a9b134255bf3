"""Billing background workers."""
