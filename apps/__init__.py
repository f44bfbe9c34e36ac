# apps/__init__.py

"""
Quadro Sync - Aplicações Django

Este pacote contém todas as aplicações do sistema:
- core: Models (usuários, quadros, layout, tarefas), autorização e admin
- sync: Motor de sincronização em tempo real via WebSockets
"""

__version__ = '0.1.0'
