"""Storefront Service business logic."""
