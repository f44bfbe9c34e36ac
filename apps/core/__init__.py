# apps/core/__init__.py

"""
Core - Aplicação base do quadro colaborativo

Contém:
- Models (Usuario, Projeto, Lista, Tarefa)
- Oráculo de autorização e token do handshake
- Middleware de autenticação do WebSocket
- Comando de verificação dos layouts
"""
