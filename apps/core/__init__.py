# apps/core/__init__.py

"""
Core - base do Kanban colaborativo

Contém:
- Models (User, Board, BoardMember, Label, Column, Task)
- Capacidades por board (permissions)
- Taxonomia de erros e middleware que os converte em JSON
- Comando de verificação de posições
"""
