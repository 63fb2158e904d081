from vertex_chat.main import cli

cli()
