"""
Strict JSON Parser - Helper for parsing and validating vision-language responses
Handles markdown fences and prose around the payload, validates against pydantic schemas
"""

import json
import re
import logging
from typing import Dict, Any, Optional, Tuple, Type
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class StrictJSONParser:
    """Parse and validate JSON objects embedded in model responses"""

    @staticmethod
    def _balanced_object(content: str, start: int) -> Optional[str]:
        """Text of the brace-balanced object starting at ``start`` (string-aware)"""
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(content)):
            char = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif char == '\\':
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == '{':
                depth += 1
            elif char == '}':
                depth -= 1
                if depth == 0:
                    return content[start:i + 1]
        return None

    @staticmethod
    def extract_json(content: str) -> Optional[Dict[str, Any]]:
        """
        Extract the first JSON object from response content

        Args:
            content: Raw response content

        Returns:
            Parsed JSON dictionary or None if no object parses
        """
        if not content:
            return None

        # Try direct JSON parsing first
        try:
            result = json.loads(content)
            if isinstance(result, dict):
                return result
        except json.JSONDecodeError:
            pass

        # Pattern 1: ```json ... ```
        json_fence_pattern = r'```(?:json)?\s*(\{.*?\})\s*```'
        match = re.search(json_fence_pattern, content, re.DOTALL | re.IGNORECASE)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError as e:
                logger.debug(f"Failed to parse JSON from markdown fence: {e}")

        # Pattern 2: first balanced object anywhere in the content
        start = content.find('{')
        while start != -1:
            candidate = StrictJSONParser._balanced_object(content, start)
            if candidate is None:
                break
            try:
                result = json.loads(candidate)
                if isinstance(result, dict):
                    return result
            except json.JSONDecodeError:
                pass
            start = content.find('{', start + 1)

        logger.debug(f"Could not extract valid JSON from response (first 200 chars): {content[:200]}")
        return None

    @staticmethod
    def validate_against_schema(
        data: Dict[str, Any],
        schema_class: Type[BaseModel]
    ) -> Tuple[bool, Optional[BaseModel], Optional[str]]:
        """
        Validate JSON data against a Pydantic schema

        Returns:
            Tuple of (is_valid, validated_object, error_message)
        """
        try:
            validated = schema_class.model_validate(data)
            return True, validated, None
        except ValidationError as e:
            error_details = []
            for error in e.errors():
                field_path = " -> ".join(str(x) for x in error['loc'])
                error_details.append(f"{field_path}: {error['msg']}")

            error_message = "Schema validation failed:\n" + "\n".join(error_details)
            logger.debug(f"Validation errors: {error_message}")
            return False, None, error_message
