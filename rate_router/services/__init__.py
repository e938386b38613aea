# Services layer: order platform, ledger, downstream signal, pipeline
