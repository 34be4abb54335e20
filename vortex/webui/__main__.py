from vortex.webui.server import main

main()
