from gotest_trace.cli import main

raise SystemExit(main())
