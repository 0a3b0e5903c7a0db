# apps/__init__.py

"""
Kanban Board - Aplicações Django

Este pacote contém todas as aplicações do sistema:
- core: Models principais, permissões e erros de domínio
- board: Posições, movimentações, eventos e tempo real (WebSocket/SSE)
"""

__version__ = '0.1.0'
