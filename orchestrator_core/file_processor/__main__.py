from orchestrator_core.file_processor.app import main

main()
