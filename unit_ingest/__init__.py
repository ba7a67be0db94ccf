"""Property unit spreadsheet ingest.

Parses uploaded CSV / XLS / XLSX unit listings, merges rows describing the
same unit, and writes the result to a Postgres row store and a Typesense
search collection.
"""

__version__ = "0.1.0"
