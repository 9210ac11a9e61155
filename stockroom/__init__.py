"""
Stockroom: inventory backend built around a stock-transaction ledger.
"""
