"""Overlap engine and meeting suggestions"""
