from typing import Literal


existing_services = Literal[
    "vault",
    "identity",
]


existing_providers = Literal["aws"]
