"""Application layer: execution session controller and question coordination."""
