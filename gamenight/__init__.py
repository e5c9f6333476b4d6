"""Game night availability core"""
