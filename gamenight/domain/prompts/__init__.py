"""Availability prompts and their lifecycle"""
