from deviceagent.cli import main

raise SystemExit(main())
