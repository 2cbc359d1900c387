"""Provider event consumption and index projection"""
