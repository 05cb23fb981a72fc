version = "1.2.2"
