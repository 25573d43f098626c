from rclink.cli import main

raise SystemExit(main())
