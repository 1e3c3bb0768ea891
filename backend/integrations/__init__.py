"""Aggregator integrations"""
