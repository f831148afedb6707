"""
Output formatting for the rrd-archive command-line tool.

Supports table, JSON, and YAML formats.
"""

import json
from typing import Any, Dict, List, Optional

import yaml
from tabulate import tabulate  # type: ignore[import-untyped]

FORMATS = ("table", "json", "yaml")


class OutputFormatterImpl:
    """Renders sample rows for the terminal."""

    def format_table(self, data: List[Dict[str, Any]], columns: Optional[List[str]] = None) -> str:
        """
        Format data as a table using tabulate.

        Args:
            data: List of dictionaries to format
            columns: Optional list of column names to include (defaults to all keys)

        Returns:
            Formatted table string
        """
        if not data:
            return "No data available."

        if columns is None:
            all_keys: set[str] = set()
            for item in data:
                all_keys.update(item.keys())
            columns = sorted(all_keys)

        table_data = []
        for item in data:
            row = []
            for col in columns:
                value = item.get(col)
                if value is None:
                    row.append("")
                elif isinstance(value, float):
                    row.append(f"{value:.4g}")
                else:
                    row.append(str(value))
            table_data.append(row)

        result: str = tabulate(table_data, headers=columns, tablefmt="simple")
        return result

    def format_json(self, data: Any) -> str:
        """Format data as indented JSON."""
        if data is None:
            return "{}"
        return json.dumps(data, indent=2, default=str)

    def format_yaml(self, data: Any) -> str:
        """Format data as YAML."""
        if data is None:
            return "{}"
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)

    def format_output(self, data: Any, format: str, columns: Optional[List[str]] = None) -> str:
        """
        Format output based on format string.

        Raises:
            ValueError: If format is not recognized
        """
        format = format.lower()

        if format == "json":
            return self.format_json(data)
        elif format == "yaml":
            return self.format_yaml(data)
        elif format == "table":
            if isinstance(data, dict):
                data = [{"key": k, "value": v} for k, v in data.items()]
                columns = columns or ["key", "value"]
            return self.format_table(data, columns)
        else:
            raise ValueError(f"Unknown format: {format}. Use 'table', 'json', or 'yaml'.")


formatter = OutputFormatterImpl()
