import typing as t

# Snowflakes travel as strings over the wire
Snowflake = t.Union[str, int]
SnowflakeList = t.List[Snowflake]
