"""
Input boundary — registration table and long monthly volume table.

Submodules:
  registrations — duplicate-id resolution and row validation
  series        — long-to-matrix pivot, matrix validation, coverage check
"""
