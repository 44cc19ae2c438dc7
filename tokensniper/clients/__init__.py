"""Data source, wallet and execution adapters"""
