"""
Reference REST server for the famipoints wire contract.
"""
