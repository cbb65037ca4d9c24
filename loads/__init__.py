"""
Loads domain package.

Public API:
- Domain models: Load, LoadStatus
- Board: LoadBoard, load_board_from_csv

"""
from .models import Load, LoadStatus
from .board import LoadBoard, LoadStateException, load_board_from_csv

__all__ = ["Load",
           "LoadStatus",
             "LoadBoard",
               "LoadStateException",
               "load_board_from_csv"
               ]
