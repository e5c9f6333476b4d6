"""Scheduling orchestrator: job queues, cadence and handlers"""
