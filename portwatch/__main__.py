from portwatch.main import main


raise SystemExit(main())
