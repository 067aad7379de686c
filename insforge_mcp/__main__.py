from insforge_mcp.cli import main

raise SystemExit(main())
