from batchdbg.cli import main

raise SystemExit(main())
