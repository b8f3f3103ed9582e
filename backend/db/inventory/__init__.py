"""
Inventory store.

Owns every read and write of items, orders and order lines. Stock is only
changed here: by order placement (guarded decrement inside one transaction)
and by the admin stock overwrite.
"""
