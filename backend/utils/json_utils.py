"""
JSON serialization utilities for handling numpy values and other non-serializable types
"""

import json
import base64
import logging
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict
from dataclasses import is_dataclass, asdict

import numpy as np

logger = logging.getLogger(__name__)


class SafeJSONEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles numpy and other common non-serializable types"""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        elif isinstance(obj, Enum):
            # Return the enum's value, not its dict representation
            return obj.value
        # NumPy scalars and arrays
        elif isinstance(obj, np.generic):
            return obj.item()
        elif isinstance(obj, np.ndarray):
            return obj.tolist()
        elif is_dataclass(obj):
            return asdict(obj)
        elif isinstance(obj, set):
            return sorted(obj)
        elif isinstance(obj, (bytes, bytearray)):
            return base64.b64encode(bytes(obj)).decode('ascii')
        return super().default(obj)


def safe_dict(obj: Any) -> Dict[str, Any]:
    """
    Convert a Pydantic model, dataclass or dict to a JSON-ready dict.

    Args:
        obj: The object to convert

    Returns:
        Dictionary containing only JSON-native values
    """
    if hasattr(obj, 'model_dump'):
        raw = obj.model_dump(mode='json')
    elif is_dataclass(obj):
        raw = asdict(obj)
    else:
        raw = obj
    return json.loads(json.dumps(raw, cls=SafeJSONEncoder))


def dumps(obj: Any, indent: int = 2) -> str:
    """Serialize ``obj`` with SafeJSONEncoder"""
    if hasattr(obj, 'model_dump'):
        obj = obj.model_dump(mode='json')
    return json.dumps(obj, cls=SafeJSONEncoder, indent=indent, ensure_ascii=False)
