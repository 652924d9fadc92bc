"""
Cliente MCP mínimo sobre STDIO para el servidor de clima
"""
__version__ = "1.0.0"
