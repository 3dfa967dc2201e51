"""Canvas — single-file HTML apps generated, validated and served."""
