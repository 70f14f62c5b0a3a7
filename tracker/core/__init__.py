"""Core ingestion pipeline package"""
