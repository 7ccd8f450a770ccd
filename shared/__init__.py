"""Shared configuration and observability for applications using mtp_inference."""
