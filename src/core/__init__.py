"""Core domain package for tasklens.

Core contains the pre-filter, pipeline, connection state machine and backfill
logic without any Telegram or storage-specific code, keeping the business
logic portable.
"""
