"""Core session, scanning and trading components"""
