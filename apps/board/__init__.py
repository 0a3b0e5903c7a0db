# apps/board/__init__.py

"""
Board - núcleo colaborativo do Kanban

Funcionalidades:
- Posições densas de colunas e tarefas
- Movimentação transacional (mesma coluna ou entre colunas)
- Eventos de mudança emitidos após o commit
- Fan-out em tempo real (WebSocket primário, SSE como fallback)
- Presença de usuários por board
"""
