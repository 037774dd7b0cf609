from .timestamps import generate_id, utc_now_iso, parse_server_timestamp, is_later, max_timestamp

__all__ = ["generate_id", "utc_now_iso", "parse_server_timestamp", "is_later", "max_timestamp"]
