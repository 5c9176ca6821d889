"""TLYT backend: chip ledger, payments and paid video analysis"""
__version__ = "1.0.0"
