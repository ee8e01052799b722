"""HTTP routers mounted by `studybuddy.main`.

- `modules`: the module → topic → chapter catalog
- `notifications`: per-user inbox, group broadcast and scheduled delivery
"""

from typing import Annotated

from fastapi import Path

from ..schemas import MAX_SQL_INT

# Row ids taken from the URL; larger values cannot be bound as SQL integers.
PathId = Annotated[int, Path(le=MAX_SQL_INT)]
